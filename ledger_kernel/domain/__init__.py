"""Pure domain layer: DTOs, validation, numbering, clock."""
