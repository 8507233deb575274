import asyncpg
import logging
from typing import Any, List, Optional, Tuple

from config import config
from config.utils import as_int, optional_str
from .models import PositionRecord, TradeActivityRecord


logger = logging.getLogger(__name__)

# Marker written into execution_attempts for trades that predate this process
HISTORICAL_ATTEMPTS_MARKER = 999

# (column, record attribute)
ACTIVITY_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ('proxy_wallet', 'wallet'),
    ('transaction_hash', 'transaction_hash'),
    ('ts', 'timestamp'),
    ('condition_id', 'condition_id'),
    ('activity_type', 'activity_type'),
    ('asset', 'asset'),
    ('side', 'side'),
    ('size', 'size'),
    ('usdc_size', 'usdc_size'),
    ('price', 'price'),
    ('outcome_index', 'outcome_index'),
    ('title', 'title'),
    ('slug', 'slug'),
    ('icon', 'icon'),
    ('event_slug', 'event_slug'),
    ('outcome', 'outcome'),
    ('name', 'name'),
    ('pseudonym', 'pseudonym'),
    ('bio', 'bio'),
    ('profile_image', 'profile_image'),
    ('profile_image_optimized', 'profile_image_optimized'),
    ('processed', 'processed'),
    ('execution_attempts', 'execution_attempts'),
)

POSITION_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ('proxy_wallet', 'wallet'),
    ('asset', 'asset'),
    ('condition_id', 'condition_id'),
    ('size', 'size'),
    ('avg_price', 'avg_price'),
    ('initial_value', 'initial_value'),
    ('current_value', 'current_value'),
    ('cash_pnl', 'cash_pnl'),
    ('percent_pnl', 'percent_pnl'),
    ('total_bought', 'total_bought'),
    ('realized_pnl', 'realized_pnl'),
    ('percent_realized_pnl', 'percent_realized_pnl'),
    ('cur_price', 'cur_price'),
    ('redeemable', 'redeemable'),
    ('mergeable', 'mergeable'),
    ('title', 'title'),
    ('slug', 'slug'),
    ('icon', 'icon'),
    ('event_slug', 'event_slug'),
    ('outcome', 'outcome'),
    ('outcome_index', 'outcome_index'),
    ('opposite_outcome', 'opposite_outcome'),
    ('opposite_asset', 'opposite_asset'),
    ('end_date', 'end_date'),
    ('negative_risk', 'negative_risk'),
)

SCHEMA_SQL = '''
CREATE TABLE IF NOT EXISTS user_activities (
    owner TEXT NOT NULL,
    proxy_wallet TEXT,
    transaction_hash TEXT NOT NULL,
    ts BIGINT NOT NULL,
    condition_id TEXT,
    activity_type TEXT,
    asset TEXT,
    side TEXT,
    size DOUBLE PRECISION,
    usdc_size DOUBLE PRECISION,
    price DOUBLE PRECISION,
    outcome_index INTEGER,
    title TEXT,
    slug TEXT,
    icon TEXT,
    event_slug TEXT,
    outcome TEXT,
    name TEXT,
    pseudonym TEXT,
    bio TEXT,
    profile_image TEXT,
    profile_image_optimized TEXT,
    processed BOOLEAN NOT NULL DEFAULT FALSE,
    execution_attempts INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (owner, transaction_hash)
);
CREATE INDEX IF NOT EXISTS user_activities_unprocessed
    ON user_activities (owner) WHERE processed = FALSE;

CREATE TABLE IF NOT EXISTS user_positions (
    owner TEXT NOT NULL,
    proxy_wallet TEXT,
    asset TEXT NOT NULL,
    condition_id TEXT NOT NULL,
    size DOUBLE PRECISION,
    avg_price DOUBLE PRECISION,
    initial_value DOUBLE PRECISION,
    current_value DOUBLE PRECISION,
    cash_pnl DOUBLE PRECISION,
    percent_pnl DOUBLE PRECISION,
    total_bought DOUBLE PRECISION,
    realized_pnl DOUBLE PRECISION,
    percent_realized_pnl DOUBLE PRECISION,
    cur_price DOUBLE PRECISION,
    redeemable BOOLEAN,
    mergeable BOOLEAN,
    title TEXT,
    slug TEXT,
    icon TEXT,
    event_slug TEXT,
    outcome TEXT,
    outcome_index INTEGER,
    opposite_outcome TEXT,
    opposite_asset TEXT,
    end_date TEXT,
    negative_risk BOOLEAN,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (owner, asset, condition_id)
);
'''


def _affected_rows(status: str) -> int:
    # asyncpg returns the command tag, e.g. "INSERT 0 1" or "UPDATE 3"
    try:
        return int(str(status).rsplit(' ', 1)[-1])
    except (TypeError, ValueError):
        return 0


def _record_from_row(cls, columns: Tuple[Tuple[str, str], ...], row: Any):
    return cls(**{attr: row[column] for column, attr in columns})


class ActivityStore:
    """Trade activity log for one watched wallet."""

    def __init__(self, pool: asyncpg.Pool, owner: str):
        self.pool = pool
        self.owner = owner.lower()

    async def count(self) -> int:
        async with self.pool.acquire() as conn:
            value = await conn.fetchval(
                'SELECT COUNT(*) FROM user_activities WHERE owner = $1', self.owner
            )
        return int(value or 0)

    async def find_by_transaction(self, transaction_hash: str) -> Optional[TradeActivityRecord]:
        columns = ', '.join(column for column, _ in ACTIVITY_COLUMNS)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'SELECT {columns} FROM user_activities WHERE owner = $1 AND transaction_hash = $2',
                self.owner,
                transaction_hash,
            )
        if row is None:
            return None
        return _record_from_row(TradeActivityRecord, ACTIVITY_COLUMNS, row)

    async def insert(self, record: TradeActivityRecord) -> bool:
        columns = ['owner'] + [column for column, _ in ACTIVITY_COLUMNS]
        placeholders = ', '.join(f'${idx}' for idx in range(1, len(columns) + 1))
        values = [self.owner] + [getattr(record, attr) for _, attr in ACTIVITY_COLUMNS]
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                f'''INSERT INTO user_activities ({', '.join(columns)})
                    VALUES ({placeholders})
                    ON CONFLICT (owner, transaction_hash) DO NOTHING''',
                *values,
            )
        return _affected_rows(status) > 0

    async def mark_all_processed(self) -> int:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                '''UPDATE user_activities
                   SET processed = TRUE, execution_attempts = $2
                   WHERE owner = $1 AND processed = FALSE''',
                self.owner,
                HISTORICAL_ATTEMPTS_MARKER,
            )
        return _affected_rows(status)


class PositionStore:
    """Latest position snapshot per (asset, condition_id) for one watched wallet."""

    def __init__(self, pool: asyncpg.Pool, owner: str):
        self.pool = pool
        self.owner = owner.lower()

    async def count(self) -> int:
        async with self.pool.acquire() as conn:
            value = await conn.fetchval(
                'SELECT COUNT(*) FROM user_positions WHERE owner = $1', self.owner
            )
        return int(value or 0)

    async def find_all(self) -> List[PositionRecord]:
        columns = ', '.join(column for column, _ in POSITION_COLUMNS)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'SELECT {columns} FROM user_positions WHERE owner = $1', self.owner
            )
        return [_record_from_row(PositionRecord, POSITION_COLUMNS, row) for row in rows]

    async def upsert(self, record: PositionRecord) -> None:
        columns = ['owner'] + [column for column, _ in POSITION_COLUMNS]
        placeholders = ', '.join(f'${idx}' for idx in range(1, len(columns) + 1))
        key_columns = {'owner', 'asset', 'condition_id'}
        updates = ',\n                       '.join(
            f'{column} = EXCLUDED.{column}' for column in columns if column not in key_columns
        )
        values = [self.owner] + [getattr(record, attr) for _, attr in POSITION_COLUMNS]
        async with self.pool.acquire() as conn:
            await conn.execute(
                f'''INSERT INTO user_positions ({', '.join(columns)})
                    VALUES ({placeholders})
                    ON CONFLICT (owner, asset, condition_id) DO UPDATE SET
                       {updates},
                       updated_at = now()''',
                *values,
            )


class DataPersister:
    def __init__(self):
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        db_config = config.section('database')
        self.pool = await asyncpg.create_pool(
            host=optional_str(db_config.get('host'), 'localhost'),
            port=as_int(db_config.get('port'), 5432),
            database=optional_str(db_config.get('database'), 'polymirror'),
            user=optional_str(db_config.get('user')),
            password=optional_str(db_config.get('password')),
            min_size=as_int(db_config.get('min_pool_size'), 2),
            max_size=as_int(db_config.get('max_pool_size'), 10),
        )
        await self.ensure_schema()

    async def ensure_schema(self):
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    def stores_for(self, address: str) -> Tuple[ActivityStore, PositionStore]:
        if self.pool is None:
            raise RuntimeError("DataPersister.initialize() must run before stores are requested")
        return ActivityStore(self.pool, address), PositionStore(self.pool, address)

    async def close(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
