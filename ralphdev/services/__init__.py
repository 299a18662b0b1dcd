"""Service layer: business rules on top of the repositories."""
