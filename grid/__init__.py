from grid.time_grid import TimeGrid, TimeSlot, week_start_of, as_week_date, DAYS_PER_WEEK

__all__ = ['TimeGrid', 'TimeSlot', 'week_start_of', 'as_week_date', 'DAYS_PER_WEEK']
