"""Import coordinator dependency."""

from fastapi import Request

from idea_importer.services.import_coordinator import ImportCoordinator


def get_coordinator(request: Request) -> ImportCoordinator:
    """FastAPI dependency returning the app-owned import coordinator."""
    return request.app.state.coordinator
