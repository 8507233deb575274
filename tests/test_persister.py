import asyncio
import sys

sys.path.insert(0, '.')

from ingest.models import PositionRecord, TradeActivityRecord
from ingest.persister import (
    ACTIVITY_COLUMNS,
    HISTORICAL_ATTEMPTS_MARKER,
    POSITION_COLUMNS,
    ActivityStore,
    PositionStore,
    _affected_rows,
)

OWNER = '0xAbCdEf0000000000000000000000000000000001'


class RecordingConnection:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.calls = []

    async def execute(self, sql, *args):
        self.calls.append((sql, args))
        return self.statuses.pop(0)


class _Acquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False


class RecordingPool:
    def __init__(self, *statuses):
        self.conn = RecordingConnection(statuses)

    def acquire(self):
        return _Acquire(self.conn)


def _placeholder_count(sql):
    values = sql.split('VALUES (', 1)[1].split(')', 1)[0]
    return len([part for part in values.split(',') if part.strip()])


def test_command_tags_parse_to_row_counts():
    assert _affected_rows('INSERT 0 1') == 1
    assert _affected_rows('INSERT 0 0') == 0
    assert _affected_rows('UPDATE 3') == 3
    assert _affected_rows(None) == 0
    assert _affected_rows('') == 0


def test_insert_reports_conflict_as_not_inserted():
    async def _run():
        pool = RecordingPool('INSERT 0 1', 'INSERT 0 0')
        store = ActivityStore(pool, OWNER)
        record = TradeActivityRecord(wallet=OWNER, transaction_hash='0xT1', timestamp=1_700_000_000)

        assert await store.insert(record) is True
        assert await store.insert(record) is False

        sql, args = pool.conn.calls[0]
        assert 'ON CONFLICT (owner, transaction_hash) DO NOTHING' in sql
        assert len(args) == len(ACTIVITY_COLUMNS) + 1
        assert _placeholder_count(sql) == len(args)
        assert args[0] == OWNER.lower()
        assert '0xT1' in args
        assert args[-2:] == (False, 0)

    asyncio.run(_run())


def test_mark_all_processed_is_scoped_to_owner():
    async def _run():
        pool = RecordingPool('UPDATE 3')
        store = ActivityStore(pool, OWNER)

        assert await store.mark_all_processed() == 3

        sql, args = pool.conn.calls[0]
        assert 'WHERE owner = $1 AND processed = FALSE' in sql
        assert args == (OWNER.lower(), HISTORICAL_ATTEMPTS_MARKER)

    asyncio.run(_run())


def test_upsert_replaces_every_non_key_column():
    async def _run():
        pool = RecordingPool('INSERT 0 1')
        store = PositionStore(pool, OWNER)
        record = PositionRecord(wallet=OWNER, asset='tok-1', condition_id='0xc1', size=4.0)

        await store.upsert(record)

        sql, args = pool.conn.calls[0]
        assert 'ON CONFLICT (owner, asset, condition_id) DO UPDATE SET' in sql
        assert len(args) == len(POSITION_COLUMNS) + 1
        assert _placeholder_count(sql) == len(args)
        update_clause = sql.split('DO UPDATE SET', 1)[1]
        for column, _ in POSITION_COLUMNS:
            if column in ('asset', 'condition_id'):
                assert f'{column} = EXCLUDED.{column}' not in update_clause
            else:
                assert f'{column} = EXCLUDED.{column}' in update_clause
        assert 'owner = EXCLUDED.owner' not in update_clause
        assert 'updated_at = now()' in update_clause

    asyncio.run(_run())
