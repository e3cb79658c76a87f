from .projector import StatsSnapshot, project_stats
