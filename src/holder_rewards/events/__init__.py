from holder_rewards.events.sinks import FanOutSink, LoggingEventSink, StoreEventSink

__all__ = ["FanOutSink", "LoggingEventSink", "StoreEventSink"]
