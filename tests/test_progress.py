import threading

from framekit.progress import JobStatus, ProgressChannel, ProgressEvent


def drain(subscription):
    return list(subscription)


def test_subscribe_replays_snapshot():
    channel = ProgressChannel()
    channel.start('job', 4)
    channel.report('job', 2, 4, 'b.jpg')
    subscription = channel.subscribe('job')
    event = subscription.get(timeout=1)
    assert event == ProgressEvent('init', 2, 4)
    subscription.close()


def test_open_is_idempotent_and_returns_snapshot():
    channel = ProgressChannel()
    first = channel.open('job')
    first.current = 99
    second = channel.open('job')
    assert second.status is JobStatus.PENDING
    assert second.current == 0


def test_full_lifecycle_event_order():
    channel = ProgressChannel()
    subscription = channel.subscribe('job')
    channel.start('job', 2)
    channel.report('job', 1, 2, 'a.jpg')
    channel.report('job', 2, 2, 'b.jpg')
    channel.complete('job')

    events = drain(subscription)
    assert [e.kind for e in events] == ['init', 'init', 'progress', 'progress', 'complete']
    assert events[2].file_name == 'a.jpg'
    assert events[-1].current == 2 and events[-1].total == 2
    assert subscription.closed
    assert 'job' not in channel


def test_fail_broadcasts_error_and_forgets_job():
    channel = ProgressChannel()
    subscription = channel.subscribe('job')
    channel.start('job', 3)
    channel.fail('job', 'c.jpg: cannot decode')
    channel.complete('job')

    events = drain(subscription)
    assert events[-1].kind == 'error'
    assert events[-1].message == 'c.jpg: cannot decode'
    assert 'complete' not in [e.kind for e in events]
    assert channel.get('job') is None


def test_current_never_decreases():
    channel = ProgressChannel()
    subscription = channel.subscribe('job')
    channel.start('job', 3)
    channel.report('job', 2, 3)
    channel.report('job', 1, 3)
    channel.complete('job')
    progress = [e.current for e in drain(subscription) if e.kind == 'progress']
    assert progress == [2, 2]


def test_report_for_unknown_job_is_ignored():
    channel = ProgressChannel()
    channel.report('ghost', 1, 1)
    assert 'ghost' not in channel


def test_unsubscribe_of_pending_job_releases_it():
    channel = ProgressChannel()
    with channel.subscribe('job'):
        assert 'job' in channel
    assert 'job' not in channel


def test_running_job_survives_unsubscribe():
    channel = ProgressChannel()
    channel.start('job', 2)
    channel.subscribe('job').close()
    assert channel.get('job').status is JobStatus.RUNNING


def test_every_subscriber_sees_generation_order():
    channel = ProgressChannel()
    subscriptions = [channel.subscribe('job') for _ in range(3)]
    channel.start('job', 200)
    counter = {'n': 0}
    lock = threading.Lock()

    def publisher():
        for _ in range(50):
            with lock:
                counter['n'] += 1
                channel.report('job', counter['n'], 200)

    threads = [threading.Thread(target=publisher) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    channel.complete('job')

    for subscription in subscriptions:
        currents = [e.current for e in drain(subscription) if e.kind == 'progress']
        assert currents == list(range(1, 201))


def test_event_serialization():
    event = ProgressEvent('progress', 1, 3, file_name='a.jpg')
    assert event.to_dict() == {'type': 'progress', 'current': 1, 'total': 3, 'fileName': 'a.jpg'}
    assert event.to_sse().startswith('event: progress\ndata: {')
    assert event.to_sse().endswith('\n\n')
    assert 'message' not in event.to_dict()


def test_opened_job_without_subscribers_is_dropped_by_next_activity():
    channel = ProgressChannel()
    channel.open('abandoned')
    channel.open('watched')
    subscription = channel.subscribe('watched')
    channel.start('other', 1)

    assert 'abandoned' not in channel
    assert 'watched' in channel
    assert channel.get('other').status is JobStatus.RUNNING
    subscription.close()


def test_sweep_keeps_running_jobs():
    channel = ProgressChannel()
    channel.start('busy', 3)
    channel.open('next')
    assert channel.get('busy').status is JobStatus.RUNNING
