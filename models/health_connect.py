from sqlalchemy import Table, Column, Integer, BigInteger, Float, String, Text
from models.base import metadata

# ============================================================================
# Health Connect SQLite export schema (the subset the importer reads).
# Every timestamp column holds epoch milliseconds.
# ============================================================================

application_info_table = Table(
    "application_info_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("package_name", String),
    Column("app_name", String),
)

heart_rate_record_table = Table(
    "heart_rate_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("start_time", BigInteger),
    Column("end_time", BigInteger),
    Column("app_info_id", Integer),
)

heart_rate_record_series_table = Table(
    "heart_rate_record_series_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("heart_rate_record_id", Integer),
    Column("epoch_millis", BigInteger),
    Column("beats_per_minute", Integer),
)

steps_record_table = Table(
    "steps_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("start_time", BigInteger),
    Column("end_time", BigInteger),
    Column("count", Integer),
    Column("app_info_id", Integer),
)

sleep_session_record_table = Table(
    "sleep_session_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("start_time", BigInteger),
    Column("end_time", BigInteger),
    Column("title", Text),
    Column("app_info_id", Integer),
)

sleep_stages_table = Table(
    "sleep_stages_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("parent_key", Integer),
    Column("stage_start_time", BigInteger),
    Column("stage_end_time", BigInteger),
    Column("stage_type", Integer),
)

# weight is stored in grams
weight_record_table = Table(
    "weight_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("time", BigInteger),
    Column("weight", Float),
    Column("app_info_id", Integer),
)

# energy is stored in calories
total_calories_burned_record_table = Table(
    "total_calories_burned_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("start_time", BigInteger),
    Column("end_time", BigInteger),
    Column("energy", Float),
    Column("app_info_id", Integer),
)

active_calories_burned_record_table = Table(
    "active_calories_burned_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("start_time", BigInteger),
    Column("end_time", BigInteger),
    Column("energy", Float),
    Column("app_info_id", Integer),
)

basal_metabolic_rate_record_table = Table(
    "basal_metabolic_rate_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("time", BigInteger),
    Column("basal_metabolic_rate", Float),
    Column("app_info_id", Integer),
)

body_fat_record_table = Table(
    "body_fat_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("time", BigInteger),
    Column("percentage", Float),
    Column("app_info_id", Integer),
)

exercise_session_record_table = Table(
    "exercise_session_record_table",
    metadata,
    Column("row_id", Integer, primary_key=True),
    Column("start_time", BigInteger),
    Column("end_time", BigInteger),
    Column("exercise_type", Integer),
    Column("title", Text),
    Column("app_info_id", Integer),
)
