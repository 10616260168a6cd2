"""Pop Radar - Population Pipeline (storage and scheduling)"""
