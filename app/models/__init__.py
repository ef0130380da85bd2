from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .profile import UserProfile
from .mission import Mission, UserMission
from .device import UserDevice
from .notification import Notification
from .cron_run import CronRun

__all__ = [
    'db',
    'UserProfile',
    'Mission',
    'UserMission',
    'UserDevice',
    'Notification',
    'CronRun',
]
