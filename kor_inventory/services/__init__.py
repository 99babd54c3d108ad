# Services layer for inventory alerts
