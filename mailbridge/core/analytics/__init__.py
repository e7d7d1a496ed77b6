from .models import EmailAnalytics, EmailStats, ResponseTimeStats, VolumePoint
from .service import AnalyticsService

__all__ = ['AnalyticsService', 'EmailAnalytics', 'EmailStats', 'ResponseTimeStats', 'VolumePoint']
