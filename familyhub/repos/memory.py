"""In-memory repositories for calendar events and family members."""

from __future__ import annotations

from familyhub.domain.models import Event, Person


class EventRepository:
    """Dict-backed store for Event instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}

    def add(self, event: Event) -> None:
        self._store[event.id] = event

    def get(self, event_id: str) -> Event | None:
        return self._store.get(event_id)

    def list_all(self) -> list[Event]:
        return sorted(self._store.values(), key=lambda e: e.start)

    def list_for_person(self, person_id: str) -> list[Event]:
        """Events the person attends, family-wide ones included."""
        return [e for e in self.list_all() if e.person == person_id or e.is_family]

    def replace(self, event: Event) -> Event | None:
        """Store an edited copy; returns the previous version, or None if unknown."""
        previous = self._store.get(event.id)
        if previous is not None:
            self._store[event.id] = event
        return previous

    def delete(self, event_id: str) -> Event | None:
        return self._store.pop(event_id, None)


class PersonRepository:
    """Dict-backed store for Person instances, keyed by id."""

    def __init__(self, people: list[Person] | None = None) -> None:
        self._store: dict[str, Person] = {p.id: p for p in people or []}

    def add(self, person: Person) -> None:
        self._store[person.id] = person

    def get(self, person_id: str) -> Person | None:
        return self._store.get(person_id)

    def list_all(self) -> list[Person]:
        return list(self._store.values())
