# common/__init__.py
# -*- coding: utf-8 -*-
"""
Shared utilities: command execution, logging, file edits, locking, retry
and status probes.
"""
