"""Pop Radar - grading population scraper."""

__version__ = "0.1.0"
