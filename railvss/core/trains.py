from dataclasses import dataclass
from typing import Dict, Iterator, List, Union

from railvss.core.exceptions import ConsistencyError, NotFoundError

TrainRef = Union[int, str]


@dataclass(frozen=True)
class Train:
    name: str
    length: float  # m
    max_speed: float  # m/s
    acceleration: float  # m/s^2
    deceleration: float  # m/s^2


class TrainList:
    """Catalog of trains, addressable by name or by insertion index."""

    def __init__(self) -> None:
        self._trains: List[Train] = []
        self._name_to_index: Dict[str, int] = {}

    def add_train(self, name: str, length: float, max_speed: float, acceleration: float, deceleration: float) -> int:
        if name in self._name_to_index:
            raise ConsistencyError(f"Train {name} already exists")
        for label, value in (("length", length), ("max_speed", max_speed), ("acceleration", acceleration), ("deceleration", deceleration)):
            if value <= 0:
                raise ConsistencyError(f"Train {name}: {label} must be positive, got {value}")
        self._trains.append(Train(name=name, length=length, max_speed=max_speed, acceleration=acceleration, deceleration=deceleration))
        self._name_to_index[name] = len(self._trains) - 1
        return len(self._trains) - 1

    def __len__(self) -> int:
        return len(self._trains)

    def __iter__(self) -> Iterator[Train]:
        return iter(self._trains)

    def has_train(self, train: TrainRef) -> bool:
        if isinstance(train, str):
            return train in self._name_to_index
        return 0 <= train < len(self._trains)

    def get_train_index(self, name: str) -> int:
        if name not in self._name_to_index:
            raise NotFoundError(f"Train {name} not found")
        return self._name_to_index[name]

    def resolve(self, train: TrainRef) -> int:
        if isinstance(train, str):
            return self.get_train_index(train)
        if not self.has_train(train):
            raise NotFoundError(f"Train with index {train} not found")
        return train

    def get_train(self, train: TrainRef) -> Train:
        return self._trains[self.resolve(train)]

    def to_records(self) -> List[Dict[str, float]]:
        return [
            {
                "name": t.name,
                "length": t.length,
                "max_speed": t.max_speed,
                "acceleration": t.acceleration,
                "deceleration": t.deceleration,
            }
            for t in self._trains
        ]

    @classmethod
    def from_records(cls, records: List[Dict[str, float]]) -> "TrainList":
        trains = cls()
        for r in records:
            trains.add_train(r["name"], r["length"], r["max_speed"], r["acceleration"], r["deceleration"])
        return trains
