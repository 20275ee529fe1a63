from .request_tracker import HistoryEntry, RequestSnapshot, RequestTracker, derive_status

__all__ = ['HistoryEntry', 'RequestSnapshot', 'RequestTracker', 'derive_status']
