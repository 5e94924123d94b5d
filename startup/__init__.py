# startup/__init__.py
# -*- coding: utf-8 -*-
"""
DK-B-Server startup: settings, stage catalogue, stage actions, runner,
orchestrator and CLI.
"""
