"""Progress, streak & achievement engine for the patient health-tracking platform"""

__version__ = "1.0.0"
