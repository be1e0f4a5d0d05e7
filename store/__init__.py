# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

from store.row_store import RowStore, JsonRowStore, StoreError

__all__ = ['RowStore', 'JsonRowStore', 'StoreError']
