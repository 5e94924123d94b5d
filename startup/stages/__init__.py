# startup/stages/__init__.py
# -*- coding: utf-8 -*-
"""
Stage actions, one per provisioning stage.
"""

from typing import Dict, Type

from .base import CallableAction, ScriptAction, StageAction
from .cache import CacheAction
from .external_nfs import ExternalNfsAction
from .file_sharing import FileSharingAction
from .iscsi import IscsiAction
from .network import NetworkAction
from .nextcloud import NextcloudAction

ACTION_CLASSES: Dict[str, Type[StageAction]] = {
    action_class.name: action_class
    for action_class in (
        NetworkAction,
        IscsiAction,
        CacheAction,
        FileSharingAction,
        ExternalNfsAction,
        NextcloudAction,
    )
}

__all__ = [
    "ACTION_CLASSES",
    "CacheAction",
    "CallableAction",
    "ExternalNfsAction",
    "FileSharingAction",
    "IscsiAction",
    "NetworkAction",
    "NextcloudAction",
    "ScriptAction",
    "StageAction",
]
