"""0001 markets, snapshots, pairs, fee config

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS markets (
          id BIGSERIAL PRIMARY KEY,
          platform TEXT NOT NULL CHECK (platform IN ('polymarket', 'kalshi')),
          platform_id TEXT NOT NULL,
          event_id TEXT,
          title TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'closed', 'resolved')),
          resolution_date TIMESTAMPTZ,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          UNIQUE (platform, platform_id)
        );
        CREATE INDEX IF NOT EXISTS idx_markets_status ON markets(status);

        CREATE TABLE IF NOT EXISTS price_snapshots (
          id BIGSERIAL PRIMARY KEY,
          market_id BIGINT NOT NULL REFERENCES markets(id) ON DELETE CASCADE,
          snapshot_at TIMESTAMPTZ NOT NULL,
          yes_price NUMERIC(10, 6) NOT NULL,
          no_price NUMERIC(10, 6) NOT NULL,
          yes_bid NUMERIC(10, 6),
          yes_ask NUMERIC(10, 6),
          no_bid NUMERIC(10, 6),
          no_ask NUMERIC(10, 6),
          yes_bid_size NUMERIC(18, 2),
          yes_ask_size NUMERIC(18, 2),
          no_bid_size NUMERIC(18, 2),
          no_ask_size NUMERIC(18, 2),
          volume_24h NUMERIC(18, 2) DEFAULT 0,
          volume_all_time NUMERIC(18, 2) DEFAULT 0,
          is_backfill BOOLEAN NOT NULL DEFAULT false
        );
        CREATE INDEX IF NOT EXISTS idx_snapshots_market_time ON price_snapshots(market_id, snapshot_at DESC);

        CREATE TABLE IF NOT EXISTS market_pairs (
          id BIGSERIAL PRIMARY KEY,
          poly_market_id BIGINT NOT NULL REFERENCES markets(id) ON DELETE CASCADE,
          kalshi_market_id BIGINT NOT NULL REFERENCES markets(id) ON DELETE CASCADE,
          match_score NUMERIC(5, 4),
          status TEXT NOT NULL DEFAULT 'suggested' CHECK (status IN ('suggested', 'confirmed', 'rejected')),
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          UNIQUE (poly_market_id, kalshi_market_id)
        );

        CREATE TABLE IF NOT EXISTS platform_config (
          platform TEXT PRIMARY KEY,
          taker_fee_pct NUMERIC(8, 6) NOT NULL,
          maker_fee_pct NUMERIC(8, 6) NOT NULL DEFAULT 0,
          settlement_fee_pct NUMERIC(8, 6) NOT NULL DEFAULT 0,
          withdrawal_fee_flat NUMERIC(10, 2) NOT NULL DEFAULT 0,
          fee_notes TEXT,
          last_verified_at TIMESTAMPTZ
        );

        INSERT INTO platform_config(platform, taker_fee_pct, fee_notes, last_verified_at)
        VALUES
          ('polymarket', 0.02, 'Approx 2% spread-based fee, varies by market liquidity', NOW()),
          ('kalshi', 0.01, 'Approximately $0.01-0.02 per contract, modeled as 1%', NOW())
        ON CONFLICT (platform) DO NOTHING;
        """
    )


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS platform_config;
        DROP TABLE IF EXISTS market_pairs;
        DROP TABLE IF EXISTS price_snapshots;
        DROP TABLE IF EXISTS markets;
        """
    )
