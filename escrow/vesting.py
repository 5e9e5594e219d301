from escrow.stream import Stream


def vested_amount(stream: Stream, at_timestamp: int) -> int:
    if not stream.has_started(at_timestamp):
        return 0

    effective_until = min(at_timestamp, stream.end_time)
    elapsed = effective_until - stream.start_time
    duration = stream.duration()

    if duration == 0:
        vested = stream.total_amount
    else:
        vested = (stream.total_amount * elapsed) // duration

    # a canceled stream stops at what was vested when it was canceled
    if stream.canceled:
        return min(vested, stream.entitled_amount())
    return vested


def claimable_amount(stream: Stream, at_timestamp: int) -> int:
    return max(0, vested_amount(stream, at_timestamp) - stream.claimed_amount)


def stream_status(stream: Stream, at_timestamp: int) -> str:
    if stream.canceled:
        return "canceled"
    # active from start_time itself even though nothing has vested yet
    if at_timestamp < stream.start_time:
        return "scheduled"
    if stream.has_ended(at_timestamp):
        return "completed"
    return "active"
