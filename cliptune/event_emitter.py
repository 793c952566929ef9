import asyncio
import typing


CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Named-event listeners for channels, transports and sessions.

	Plain callbacks run inline; coroutine functions are scheduled as tasks on
	the running loop so that ``emit`` can be called from synchronous code such
	as task done-callbacks.
	"""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}
		self._once: typing.Set[typing.Tuple[str, int]] = set()
		self._tasks: typing.Set["asyncio.Task[typing.Any]"] = set()


	def on (self, event_name: str, callback: CallbackType) -> CallbackType:

		"""
		Register ``callback`` for ``event_name``; returns it so it can be passed to ``off`` later.
		"""

		self._listeners.setdefault(event_name, []).append(callback)

		return callback


	def once (self, event_name: str, callback: CallbackType) -> CallbackType:

		"""
		Register a callback that is removed after its first call.
		"""

		self.on(event_name, callback)
		self._once.add((event_name, id(callback)))

		return callback


	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		listeners = self._listeners.get(event_name, [])

		if callback not in listeners:
			raise ValueError(f"Callback not registered for event {event_name!r}")

		listeners.remove(callback)
		self._once.discard((event_name, id(callback)))


	def listener_count (self, event_name: str) -> int:

		return len(self._listeners.get(event_name, []))


	def emit (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call every listener for ``event_name`` in registration order.
		"""

		for callback in list(self._listeners.get(event_name, [])):

			if (event_name, id(callback)) in self._once:
				self.off(event_name, callback)

			if asyncio.iscoroutinefunction(callback):
				task = asyncio.get_running_loop().create_task(callback(*args, **kwargs))
				self._tasks.add(task)
				task.add_done_callback(self._tasks.discard)

			else:
				callback(*args, **kwargs)


	async def emit_async (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Emit an event and await coroutine listeners before returning.
		"""

		awaitables: typing.List[typing.Awaitable[typing.Any]] = []

		for callback in list(self._listeners.get(event_name, [])):

			if (event_name, id(callback)) in self._once:
				self.off(event_name, callback)

			if asyncio.iscoroutinefunction(callback):
				awaitables.append(callback(*args, **kwargs))

			else:
				callback(*args, **kwargs)

		if awaitables:
			await asyncio.gather(*awaitables)
