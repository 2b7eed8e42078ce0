"""Pure domain layer: amounts, DTOs, validation and time."""
