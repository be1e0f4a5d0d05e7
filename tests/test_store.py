"""
Row store tests - in-memory tables with optional JSON persistence
"""

import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from store.row_store import JsonRowStore, StoreError

KEYS = ('user_id', 'webinar_id')


class TestJsonRowStore:

    @pytest.mark.store
    def test_upsert_merges_on_conflict_keys(self, store):
        store.upsert('t', {'user_id': 'u', 'webinar_id': '1', 'topic': 'A', 'agenda': 'x'}, KEYS)
        store.upsert('t', {'user_id': 'u', 'webinar_id': '1', 'topic': 'B'}, KEYS)

        rows = store.select('t')
        assert len(rows) == 1
        assert rows[0]['topic'] == 'B'
        assert rows[0]['agenda'] == 'x'

    @pytest.mark.store
    def test_upsert_without_conflict_column_fails(self, store):
        with pytest.raises(StoreError):
            store.upsert('t', {'user_id': 'u', 'topic': 'A'}, KEYS)

    @pytest.mark.store
    def test_select_orders_with_missing_values_last(self, store):
        for webinar_id, start in (('1', '2024-01-01'), ('2', None), ('3', '2024-03-01')):
            store.insert('t', {'user_id': 'u', 'webinar_id': webinar_id, 'start_time': start})

        rows = store.select('t', {'user_id': 'u'}, order_by='start_time', descending=True)

        assert [r['webinar_id'] for r in rows] == ['3', '1', '2']

    @pytest.mark.store
    def test_list_filter_matches_any(self, store):
        for webinar_id in ('1', '2', '3'):
            store.insert('t', {'user_id': 'u', 'webinar_id': webinar_id})

        assert len(store.select('t', {'webinar_id': ['1', '3']})) == 2

    @pytest.mark.store
    def test_selected_rows_are_copies(self, store):
        store.insert('t', {'user_id': 'u', 'webinar_id': '1', 'raw_data': {'a': 1}})

        store.select('t')[0]['raw_data']['a'] = 2

        assert store.select('t')[0]['raw_data']['a'] == 1

    @pytest.mark.store
    def test_update_and_delete(self, store):
        store.insert('t', {'user_id': 'u', 'webinar_id': '1', 'participant_type': 'registrant'})
        store.insert('t', {'user_id': 'u', 'webinar_id': '1', 'participant_type': 'attendee'})

        assert store.update('t', {'participant_type': 'attendee'}, {'name': 'Joe'}) == 1
        assert store.delete('t', {'participant_type': 'registrant'}) == 1
        assert store.select('t') == [
            {'user_id': 'u', 'webinar_id': '1', 'participant_type': 'attendee', 'name': 'Joe'}
        ]

    @pytest.mark.store
    def test_unfiltered_delete_is_refused(self, store):
        store.insert('t', {'user_id': 'u'})
        with pytest.raises(StoreError):
            store.delete('t', {})

    @pytest.mark.store
    def test_persists_to_disk_and_reloads(self, tmp_path):
        path = str(tmp_path / 'cache.json')
        JsonRowStore(path).upsert('t', {'user_id': 'u', 'webinar_id': '1'}, KEYS)

        assert JsonRowStore(path).select('t') == [{'user_id': 'u', 'webinar_id': '1'}]

    @pytest.mark.store
    def test_unwritable_path_raises_store_error(self, tmp_path):
        store = JsonRowStore(str(tmp_path / 'missing-dir' / 'cache.json'))

        with pytest.raises(StoreError):
            store.insert('t', {'user_id': 'u'})

    @pytest.mark.store
    def test_save_leaves_no_temp_file_behind(self, tmp_path):
        path = tmp_path / 'cache.json'
        store = JsonRowStore(str(path))
        store.insert('t', {'user_id': 'u'})
        store.update('t', {'user_id': 'u'}, {'name': 'Joe'})

        assert os.listdir(tmp_path) == ['cache.json']
        assert JsonRowStore(str(path)).select('t') == [{'user_id': 'u', 'name': 'Joe'}]

    @pytest.mark.store
    def test_failed_save_rolls_memory_back_and_keeps_old_file(self, tmp_path, monkeypatch):
        path = str(tmp_path / 'cache.json')
        store = JsonRowStore(path)
        store.upsert('t', {'user_id': 'u', 'webinar_id': '1', 'topic': 'Old'}, KEYS)

        def disk_full(src, dst):
            raise OSError(28, 'No space left on device')

        monkeypatch.setattr(os, 'replace', disk_full)

        with pytest.raises(StoreError):
            store.upsert('t', {'user_id': 'u', 'webinar_id': '1', 'topic': 'New'}, KEYS)
        with pytest.raises(StoreError):
            store.update('t', {'webinar_id': '1'}, {'topic': 'Newer'})
        with pytest.raises(StoreError):
            store.delete('t', {'webinar_id': '1'})
        with pytest.raises(StoreError):
            store.insert('other', {'user_id': 'u'})

        monkeypatch.undo()
        assert store.select('t') == [{'user_id': 'u', 'webinar_id': '1', 'topic': 'Old'}]
        assert store.select('other') == []
        assert 'other' not in store.tables
        assert JsonRowStore(path).select('t') == [{'user_id': 'u', 'webinar_id': '1', 'topic': 'Old'}]
        assert sorted(os.listdir(tmp_path)) == ['cache.json']
