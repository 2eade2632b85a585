"""cronpost - scheduled HTTP jobs with durable execution logs."""

__app_name__ = "cronpost"
__version__ = "0.1.0"
