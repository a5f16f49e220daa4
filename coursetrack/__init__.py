"""coursetrack - lesson progress tracking service."""
