from dotenv import load_dotenv
import os

load_dotenv()

def get_appdata_dir(app_name="StudioScheduler"):
    if os.name == 'nt':  # Windows
        base_dir = os.getenv('APPDATA', os.path.expanduser('~\\AppData\\Roaming'))
    else:  # Linux and macOS
        base_dir = os.getenv('XDG_DATA_HOME', os.path.expanduser('~/.local/share'))
    appdata_path = os.path.join(base_dir, app_name)

    os.makedirs(appdata_path, exist_ok=True)
    return appdata_path

def _optional_int(value):
    """'none', 'off' or an empty string disable the setting"""
    if value is None or str(value).strip().lower() in ('', 'none', 'off'):
        return None
    return int(value)

class Config:
    """Base configuration class"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # File upload settings
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Scheduling policy, read by SchedulingPolicy.from_mapping
    HARD_CAP_HOURS = float(os.environ.get('HARD_CAP_HOURS', 15))
    SOFT_WARN_HOURS = float(os.environ.get('SOFT_WARN_HOURS', 12))
    WEEKEND_EXCLUSION_HOUR = _optional_int(os.environ.get('WEEKEND_EXCLUSION_HOUR', 18))
    TOP_PERFORMER_FLOOR = float(os.environ.get('TOP_PERFORMER_FLOOR', 6))

class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG').upper()

    # SQLite for development
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///database.db'

class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        f'sqlite:///{os.path.join(get_appdata_dir(), "database.db")}'

class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = 'WARNING'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'  # In-memory database for testing

    HARD_CAP_HOURS = 15.0
    SOFT_WARN_HOURS = 12.0
    WEEKEND_EXCLUSION_HOUR = 18
    TOP_PERFORMER_FLOOR = 6.0

# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
