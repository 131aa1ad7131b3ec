"""
CODEPATH MANAGERS - Operations an editor integration calls

- NodeManager: create / delete / update / select / validate nodes
- NodeOrderManager: reorder siblings
- ClipboardManager: copy / cut / paste subtrees
"""

from managers.node_manager import NodeManager
from managers.node_order_manager import NodeOrderManager
from managers.clipboard_manager import ClipboardManager, ClipboardInfo

__all__ = [
    "NodeManager",
    "NodeOrderManager",
    "ClipboardManager",
    "ClipboardInfo",
]
