"""taskwire — background task distribution with realtime progress relay.

Request handlers publish task events to a message broker (Kafka, Redis or
RabbitMQ), a worker process consumes them through a bounded worker pool,
and progress events flow back to live WebSocket clients.
"""

__version__ = "0.1.0"
