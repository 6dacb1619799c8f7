"""
Configuration settings for the scheduling engine.
Load configuration from environment variables or a .env file.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
env_file = Path(__file__).parent.parent.parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)


def _int_list(raw: str) -> tuple[int, ...]:
    return tuple(int(x) for x in raw.split(',') if x.strip())


class Settings:
    """Engine settings loaded from environment variables."""

    # Logging
    LOG_LEVEL = os.getenv('GANTT_CPM_LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('GANTT_CPM_LOG_DIR', '')

    # ============================================================================
    # Calendars / CPM
    # ============================================================================
    DEFAULT_CALENDAR = os.getenv('GANTT_CPM_DEFAULT_CALENDAR', '5d')
    CALENDAR_HORIZON_DAYS = int(os.getenv('GANTT_CPM_CALENDAR_HORIZON_DAYS', '3650'))
    MAX_BASELINES = int(os.getenv('GANTT_CPM_MAX_BASELINES', '11'))
    MAX_FLOAT_PATHS = int(os.getenv('GANTT_CPM_MAX_FLOAT_PATHS', '10'))

    # ============================================================================
    # Monte Carlo
    # ============================================================================
    SIM_ITERATIONS = int(os.getenv('GANTT_CPM_SIM_ITERATIONS', '1000'))
    SIM_CHUNK_SIZE = int(os.getenv('GANTT_CPM_SIM_CHUNK_SIZE', '50'))
    SIM_MAX_RETRIES = int(os.getenv('GANTT_CPM_SIM_MAX_RETRIES', '3'))
    HISTOGRAM_BINS = int(os.getenv('GANTT_CPM_HISTOGRAM_BINS', '20'))
    CONFIDENCE_LEVELS = _int_list(os.getenv('GANTT_CPM_CONFIDENCE_LEVELS', '10,25,50,75,80,90'))

    # ============================================================================
    # Schedule checks
    # ============================================================================
    LONG_LAG_DAYS = int(os.getenv('GANTT_CPM_LONG_LAG_DAYS', '20'))
    LONG_DURATION_DAYS = int(os.getenv('GANTT_CPM_LONG_DURATION_DAYS', '20'))
    LARGE_FLOAT_DAYS = int(os.getenv('GANTT_CPM_LARGE_FLOAT_DAYS', '20'))

    @classmethod
    def validate_required_settings(cls) -> list[str]:
        """
        Validate that numeric settings are usable.
        Returns list of offending setting names.
        """
        bad = []
        if cls.CALENDAR_HORIZON_DAYS <= 0:
            bad.append('GANTT_CPM_CALENDAR_HORIZON_DAYS')
        if cls.SIM_CHUNK_SIZE <= 0:
            bad.append('GANTT_CPM_SIM_CHUNK_SIZE')
        if cls.SIM_MAX_RETRIES < 0:
            bad.append('GANTT_CPM_SIM_MAX_RETRIES')
        if cls.HISTOGRAM_BINS <= 0:
            bad.append('GANTT_CPM_HISTOGRAM_BINS')
        if any(not 0 <= p <= 100 for p in cls.CONFIDENCE_LEVELS):
            bad.append('GANTT_CPM_CONFIDENCE_LEVELS')
        return bad


# Create settings instance
settings = Settings()
