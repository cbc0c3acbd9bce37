"""Pure domain layer of the stock kernel: DTOs, enums, clock and precision policy."""
