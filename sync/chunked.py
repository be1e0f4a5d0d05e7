# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Chunked Sync - Incremental enrichment of per-webinar detail data

Callers split their webinar ids into chunks and send one chunk per request;
each chunk pulls one data type (participants, chat, polls, questions,
recordings or instances) and upserts it. A provider 4xx for a webinar means
there is simply no data of that type and counts as processed.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import requests

from models import INSTANCES_TABLE, INSTANCE_CONFLICT_KEYS
from store.row_store import RowStore, StoreError
from sync.history import SyncHistory
from zoom_ops.client import ZoomClient
from zoom_ops.errors import ZoomApiError

logger = logging.getLogger(__name__)

PARTICIPANTS_TABLE = 'zoom_webinar_participants'
CHAT_TABLE = 'zoom_webinar_chat'
POLLS_TABLE = 'zoom_webinar_polls'
POLL_RESPONSES_TABLE = 'zoom_webinar_poll_responses'
QUESTIONS_TABLE = 'zoom_webinar_questions'
RECORDINGS_TABLE = 'zoom_webinar_recordings'

PARTICIPANT_KEYS = ('user_id', 'webinar_id', 'participant_id', 'participant_type')
CHAT_KEYS = ('user_id', 'webinar_id', 'sender_id', 'message_time')
POLL_KEYS = ('user_id', 'webinar_id', 'poll_id')
POLL_RESPONSE_KEYS = ('user_id', 'webinar_id', 'poll_id', 'email')
QUESTION_KEYS = ('user_id', 'webinar_id', 'question_id')
RECORDING_KEYS = ('user_id', 'webinar_id', 'recording_id')

DATA_TYPES = ('participants', 'chat', 'polls', 'questions', 'recordings', 'instances')


def registrant_row(user_id: str, webinar_id: str, registrant: Dict) -> Dict:
    name = ' '.join(p for p in (registrant.get('first_name'), registrant.get('last_name')) if p)
    return {
        'user_id': user_id,
        'webinar_id': str(webinar_id),
        'participant_id': registrant.get('id') or registrant.get('email'),
        'participant_type': 'registrant',
        'name': name or None,
        'email': registrant.get('email'),
        'status': registrant.get('status'),
        'registration_time': registrant.get('create_time'),
        'raw_data': registrant
    }


def attendee_row(user_id: str, webinar_id: str, participant: Dict) -> Dict:
    participant_id = (participant.get('id') or participant.get('user_id')
                      or participant.get('user_email') or participant.get('email'))
    if not participant_id and participant.get('name'):
        participant_id = f"{participant['name']}|{participant.get('join_time') or ''}"
    return {
        'user_id': user_id,
        'webinar_id': str(webinar_id),
        'participant_id': participant_id,
        'participant_type': 'attendee',
        'name': participant.get('name'),
        'email': participant.get('user_email') or participant.get('email'),
        'join_time': participant.get('join_time'),
        'leave_time': participant.get('leave_time'),
        'duration': participant.get('duration'),
        'raw_data': participant
    }


@dataclass
class ChunkResult:
    data_type: str
    chunk_index: int
    total_chunks: int
    processed: int = 0
    successful: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)
    items_stored: int = 0

    @property
    def is_complete(self) -> bool:
        return self.chunk_index >= self.total_chunks - 1

    def to_dict(self) -> Dict:
        return {
            'success': True,
            'dataType': self.data_type,
            'chunkIndex': self.chunk_index,
            'totalChunks': self.total_chunks,
            'processed': self.processed,
            'successful': self.successful,
            'errors': self.errors,
            'errorDetails': list(self.error_details),
            'itemsStored': self.items_stored,
            'isComplete': self.is_complete
        }


class ChunkedSyncer:
    """Syncs one data type for one chunk of webinar ids"""

    def __init__(self, client: ZoomClient, store: RowStore, history: SyncHistory,
                 page_size: int = 300, timeout: Optional[float] = None):
        self.client = client
        self.store = store
        self.history = history
        self.page_size = page_size
        self.timeout = timeout
        self._handlers: Dict[str, Callable[[str, str], int]] = {
            'participants': self._sync_participants,
            'chat': self._sync_chat,
            'polls': self._sync_polls,
            'questions': self._sync_questions,
            'recordings': self._sync_recordings,
            'instances': self._sync_instances
        }

    def sync_chunk(self, user_id: str, data_type: str, webinar_ids: List[str],
                   chunk_index: int = 0, total_chunks: int = 1) -> ChunkResult:
        """
        Raises:
            ValueError: unknown data type
        """
        handler = self._handlers.get(data_type)
        if handler is None:
            raise ValueError(f"Unknown data type: {data_type}")

        result = ChunkResult(data_type, chunk_index, total_chunks)
        logger.info(f"🧩 Chunk {chunk_index + 1}/{total_chunks}: syncing {data_type} "
                    f"for {len(webinar_ids)} webinars")

        for webinar_id in webinar_ids:
            result.processed += 1
            try:
                result.items_stored += handler(user_id, str(webinar_id))
                result.successful += 1
            except (requests.exceptions.RequestException, ZoomApiError, StoreError) as e:
                result.errors += 1
                result.error_details.append(f"{webinar_id}: {e}")
                logger.warning(f"Error syncing {data_type} for webinar {webinar_id}: {e}")

        self.history.add_entry(
            user_id,
            f"chunk-{data_type}",
            'partial' if result.errors else 'success',
            result.successful,
            f"Chunk {chunk_index + 1}/{total_chunks}: "
            f"{result.successful}/{result.processed} webinars processed successfully"
        )
        return result

    def _fetch(self, path: str, params: Optional[Dict] = None) -> Dict:
        """Provider 4xx means "no data of this type"; 5xx and network errors propagate"""
        try:
            return self.client.get(path, params=params, timeout=self.timeout)
        except ZoomApiError as e:
            if e.status_code is not None and 400 <= e.status_code < 500 and e.status_code != 429:
                logger.debug(f"No data at {path}: {e}")
                return {}
            raise

    def _fetch_all(self, path: str, items_key: str) -> List[Dict]:
        """Every page of a list endpoint; a provider 4xx means an empty list"""
        try:
            return self.client.get_paginated(path, items_key, {'page_size': self.page_size},
                                             timeout=self.timeout)
        except ZoomApiError as e:
            if e.status_code is not None and 400 <= e.status_code < 500 and e.status_code != 429:
                logger.debug(f"No data at {path}: {e}")
                return []
            raise

    def fetch_registrants(self, webinar_id: str) -> List[Dict]:
        return self._fetch_all(f"/webinars/{webinar_id}/registrants", 'registrants')

    def fetch_attendees(self, webinar_id: str) -> List[Dict]:
        return self._fetch_all(f"/past_webinars/{webinar_id}/participants", 'participants')

    def replace_participants(self, user_id: str, webinar_id: str) -> Dict[str, int]:
        """Delete-then-insert registrants and attendees for one webinar"""
        registrants = self.fetch_registrants(webinar_id)
        attendees = self.fetch_attendees(webinar_id)
        counts = {'registrants': 0, 'attendees': 0}

        for participant_type, items, to_row, key in (
            ('registrant', registrants, registrant_row, 'registrants'),
            ('attendee', attendees, attendee_row, 'attendees')
        ):
            self.store.delete(PARTICIPANTS_TABLE, {
                'user_id': user_id, 'webinar_id': str(webinar_id), 'participant_type': participant_type
            })
            for item in items:
                self.store.insert(PARTICIPANTS_TABLE, to_row(user_id, webinar_id, item))
                counts[key] += 1

        logger.info(f"👥 Replaced participants for webinar {webinar_id}: "
                    f"{counts['registrants']} registrants, {counts['attendees']} attendees")
        return counts

    def _sync_participants(self, user_id: str, webinar_id: str) -> int:
        rows = [registrant_row(user_id, webinar_id, r) for r in self.fetch_registrants(webinar_id)]
        rows += [attendee_row(user_id, webinar_id, p) for p in self.fetch_attendees(webinar_id)]
        for row in rows:
            self.store.upsert(PARTICIPANTS_TABLE, row, PARTICIPANT_KEYS)
        logger.debug(f"Synced {len(rows)} participants for webinar {webinar_id}")
        return len(rows)

    def _sync_chat(self, user_id: str, webinar_id: str) -> int:
        messages = self._fetch(f"/past_webinars/{webinar_id}/chat").get('messages') or []
        for message in messages:
            recipient = message.get('recipient') or {}
            self.store.upsert(CHAT_TABLE, {
                'user_id': user_id,
                'webinar_id': webinar_id,
                'sender_id': message.get('sender_id') or message.get('sender_email') or message.get('sender_name'),
                'sender_name': message.get('sender_name'),
                'sender_email': message.get('sender_email'),
                'message': message.get('message'),
                'message_time': message.get('date_time'),
                'recipient_type': recipient.get('type'),
                'recipient_id': recipient.get('id'),
                'recipient_name': recipient.get('name'),
                'raw_data': message
            }, CHAT_KEYS)
        return len(messages)

    def _sync_polls(self, user_id: str, webinar_id: str) -> int:
        polls = self._fetch(f"/past_webinars/{webinar_id}/polls").get('polls') or []
        stored = 0
        for poll in polls:
            self.store.upsert(POLLS_TABLE, {
                'user_id': user_id,
                'webinar_id': webinar_id,
                'poll_id': poll.get('id'),
                'title': poll.get('title'),
                'status': poll.get('status'),
                'questions': poll.get('questions'),
                'start_time': poll.get('start_time'),
                'end_time': poll.get('end_time'),
                'total_participants': poll.get('total_participants'),
                'raw_data': poll
            }, POLL_KEYS)
            stored += 1

            for response in poll.get('responses') or []:
                self.store.upsert(POLL_RESPONSES_TABLE, {
                    'user_id': user_id,
                    'webinar_id': webinar_id,
                    'poll_id': poll.get('id'),
                    'name': response.get('name'),
                    'email': response.get('email') or response.get('name'),
                    'responses': response.get('responses'),
                    'response_time': response.get('response_time'),
                    'raw_data': response
                }, POLL_RESPONSE_KEYS)
                stored += 1
        return stored

    def _sync_questions(self, user_id: str, webinar_id: str) -> int:
        questions = self._fetch(f"/past_webinars/{webinar_id}/qa").get('questions') or []
        for qa in questions:
            question_id = qa.get('question_id') or f"{qa.get('email') or qa.get('name')}|{qa.get('date_time')}"
            self.store.upsert(QUESTIONS_TABLE, {
                'user_id': user_id,
                'webinar_id': webinar_id,
                'question_id': question_id,
                'question': qa.get('question'),
                'answer': qa.get('answer'),
                'name': qa.get('name'),
                'email': qa.get('email'),
                'question_time': qa.get('date_time'),
                'answer_time': qa.get('answer_date_time'),
                'answered': bool(qa.get('answer')),
                'answered_by': qa.get('answered_by'),
                'raw_data': qa
            }, QUESTION_KEYS)
        return len(questions)

    def _sync_recordings(self, user_id: str, webinar_id: str) -> int:
        files = self._fetch(f"/past_webinars/{webinar_id}/recordings").get('recording_files') or []
        for recording in files:
            self.store.upsert(RECORDINGS_TABLE, {
                'user_id': user_id,
                'webinar_id': webinar_id,
                'recording_id': recording.get('id'),
                'recording_type': recording.get('recording_type'),
                'file_type': recording.get('file_type'),
                'file_size': recording.get('file_size'),
                'play_url': recording.get('play_url'),
                'download_url': recording.get('download_url'),
                'recording_start': recording.get('recording_start'),
                'recording_end': recording.get('recording_end'),
                'status': recording.get('status'),
                'raw_data': recording
            }, RECORDING_KEYS)
        return len(files)

    def _sync_instances(self, user_id: str, webinar_id: str) -> int:
        past = self._fetch(f"/past_webinars/{webinar_id}/instances").get('webinars') or []
        stored = 0
        for occurrence in past:
            if not occurrence.get('uuid'):
                continue
            self.store.upsert(INSTANCES_TABLE, {
                'user_id': user_id,
                'webinar_id': webinar_id,
                'instance_id': occurrence['uuid'],
                'start_time': occurrence.get('start_time'),
                'past_instance_data': occurrence
            }, INSTANCE_CONFLICT_KEYS)
            stored += 1
        return stored
