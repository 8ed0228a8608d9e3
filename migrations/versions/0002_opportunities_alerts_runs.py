"""0002 arb_opportunities, volume_alerts, sync_status

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op


revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS arb_opportunities (
          id BIGSERIAL PRIMARY KEY,
          type TEXT NOT NULL CHECK (type IN ('underround', 'cross_platform')),
          subject_id BIGINT NOT NULL,
          quality TEXT NOT NULL CHECK (quality IN ('executable', 'thin', 'theoretical')),
          market_id BIGINT REFERENCES markets(id) ON DELETE CASCADE,
          market_pair_id BIGINT REFERENCES market_pairs(id) ON DELETE CASCADE,
          gross_spread_pct NUMERIC(12, 6) NOT NULL,
          total_fees_pct NUMERIC(12, 6) NOT NULL,
          net_spread_pct NUMERIC(12, 6) NOT NULL,
          max_deployable_usd NUMERIC(18, 2) NOT NULL DEFAULT 0,
          capital_weighted_spread NUMERIC(12, 6) NOT NULL DEFAULT 0,
          detected_at TIMESTAMPTZ NOT NULL,
          last_seen_at TIMESTAMPTZ NOT NULL,
          snapshot_count INTEGER NOT NULL DEFAULT 1,
          duration_seconds INTEGER NOT NULL DEFAULT 0,
          resolved_at TIMESTAMPTZ,
          resolution_reason TEXT CHECK (
            resolution_reason IN ('spread_gone', 'market_closed', 'sanity_ceiling', 'stale')
          ),
          details JSONB NOT NULL DEFAULT '{}'::jsonb,
          CHECK (
            (type = 'underround' AND market_id IS NOT NULL AND subject_id = market_id)
            OR (type = 'cross_platform' AND market_pair_id IS NOT NULL AND subject_id = market_pair_id)
          )
        );
        CREATE UNIQUE INDEX IF NOT EXISTS uq_arb_active_key
          ON arb_opportunities(type, subject_id) WHERE resolved_at IS NULL;
        CREATE INDEX IF NOT EXISTS idx_arb_detected ON arb_opportunities(detected_at DESC);

        CREATE TABLE IF NOT EXISTS volume_alerts (
          id BIGSERIAL PRIMARY KEY,
          market_id BIGINT NOT NULL REFERENCES markets(id) ON DELETE CASCADE,
          snapshot_id BIGINT REFERENCES price_snapshots(id) ON DELETE SET NULL,
          volume_usd NUMERIC(18, 2) NOT NULL,
          rolling_avg_7d NUMERIC(18, 2) NOT NULL,
          rolling_stddev_7d NUMERIC(18, 2) NOT NULL,
          z_score NUMERIC(12, 4) NOT NULL,
          multiplier NUMERIC(12, 4) NOT NULL,
          alert_at TIMESTAMPTZ NOT NULL
        );
        CREATE UNIQUE INDEX IF NOT EXISTS uq_volume_alert_snapshot ON volume_alerts(market_id, snapshot_id);
        CREATE INDEX IF NOT EXISTS idx_volume_alerts_at ON volume_alerts(alert_at DESC);

        CREATE TABLE IF NOT EXISTS sync_status (
          id BIGSERIAL PRIMARY KEY,
          sync_type TEXT NOT NULL,
          started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          completed_at TIMESTAMPTZ,
          status TEXT NOT NULL CHECK (status IN ('running', 'completed', 'failed')),
          markets_synced INTEGER DEFAULT 0,
          arbs_detected INTEGER DEFAULT 0,
          error_message TEXT,
          stats JSONB DEFAULT '{}'::jsonb
        );
        CREATE UNIQUE INDEX IF NOT EXISTS uq_sync_status_running
          ON sync_status(sync_type) WHERE status = 'running';
        """
    )


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS sync_status;
        DROP TABLE IF EXISTS volume_alerts;
        DROP TABLE IF EXISTS arb_opportunities;
        """
    )
