"""NextBus vehicle-location ingest and geofence hit tracking."""

__version__ = "0.1.0"
