"""Cell reservation management for the site simulation."""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from site_fleet.enterprise.core.models import Reservation
from site_fleet.grid import Cell


class ReservationManager:
	"""Tracks the cell each robot occupies, evicting claims after ``ttl_ticks``."""

	def __init__(self, ttl_ticks: int = 3) -> None:
		self.ttl_ticks = ttl_ticks
		self._reservations: Dict[str, Reservation] = {}
		self._tick = 0

	def claim(self, robot_id: str, cell: Cell, tick: int) -> Reservation:
		reservation = Reservation(robot_id=robot_id, cell=cell, created_tick=tick, ttl_ticks=self.ttl_ticks)
		self._reservations[robot_id] = reservation
		self._tick = tick
		return reservation

	def release(self, robot_id: str) -> None:
		self._reservations.pop(robot_id, None)

	def reservations(self) -> List[Reservation]:
		self._purge_expired()
		return list(self._reservations.values())

	def get(self, robot_id: str) -> Optional[Reservation]:
		self._purge_expired()
		return self._reservations.get(robot_id)

	def is_reserved(self, cell: Cell, exclude_robot: Optional[str] = None) -> bool:
		self._purge_expired()
		for robot, reservation in self._reservations.items():
			if exclude_robot and robot == exclude_robot:
				continue
			if reservation.cell == cell:
				return True
		return False

	def cells(self, exclude_robot: Optional[str] = None) -> Set[Cell]:
		self._purge_expired()
		return {
			reservation.cell
			for robot, reservation in self._reservations.items()
			if robot != exclude_robot
		}

	def _purge_expired(self) -> None:
		expired = [rid for rid, res in self._reservations.items() if res.is_expired(self._tick)]
		for rid in expired:
			self._reservations.pop(rid, None)

	def reset(self) -> None:
		self._reservations.clear()
		self._tick = 0
