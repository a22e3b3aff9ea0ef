"""SQLite database schema for tracking sessions."""

TRACKING_SCHEMA = """
-- ============================================
-- FieldTrack Tracking Database Schema
-- Version: 1.0.0
-- ============================================

-- Tracking sessions (check-in to check-out)
CREATE TABLE IF NOT EXISTS tracking_sessions (
    id TEXT PRIMARY KEY,
    owner_user_id TEXT NOT NULL,

    -- Timestamps (ISO-8601, UTC)
    check_in TEXT NOT NULL,
    check_out TEXT,

    -- Locations: JSON-encoded coordinates
    start_location TEXT,
    end_location TEXT,
    last_location TEXT,

    -- Running totals
    total_distance_km REAL NOT NULL DEFAULT 0,
    coordinate_count INTEGER NOT NULL DEFAULT 0,

    -- Close results
    duration_minutes REAL,
    avg_speed_kmh REAL,
    calculation_method TEXT,
    close_warnings TEXT,  -- JSON array
    close_reason TEXT,
    closed_by TEXT,
    force_closed INTEGER DEFAULT 0
);

-- GPS logs (append-only, insertion ordered)
CREATE TABLE IF NOT EXISTS gps_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    accuracy REAL,
    speed REAL,
    altitude REAL,

    FOREIGN KEY (session_id) REFERENCES tracking_sessions(id) ON DELETE CASCADE
);

-- Daily totals per user
CREATE TABLE IF NOT EXISTS daily_summaries (
    user_id TEXT NOT NULL,
    day TEXT NOT NULL,
    total_km REAL NOT NULL DEFAULT 0,
    total_hours REAL NOT NULL DEFAULT 0,
    check_in_count INTEGER NOT NULL DEFAULT 0,

    PRIMARY KEY (user_id, day)
);

-- ============================================
-- Indexes for performance
-- ============================================

CREATE INDEX IF NOT EXISTS idx_sessions_owner ON tracking_sessions(owner_user_id, check_in);
CREATE INDEX IF NOT EXISTS idx_sessions_open ON tracking_sessions(owner_user_id, check_out);
CREATE INDEX IF NOT EXISTS idx_logs_session ON gps_logs(session_id, id);
"""
