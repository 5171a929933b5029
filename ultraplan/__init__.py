"""Ultra Endurance Planner - local-first data layer and Supabase sync core."""

__version__ = "0.1.0"
