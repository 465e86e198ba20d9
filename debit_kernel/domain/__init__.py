"""Pure domain values: clock, settings, DTOs.  No I/O except SystemClock."""
