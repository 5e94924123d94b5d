# common/debian/__init__.py
# -*- coding: utf-8 -*-
