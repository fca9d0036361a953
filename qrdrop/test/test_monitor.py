from qrdrop.monitor import TransferMonitor


def test_counters():
    monitor = TransferMonitor()
    monitor.record_download(100)
    monitor.record_download(50)
    monitor.record_upload(7)
    stats = monitor.get_stats()
    assert stats.downloads == 2
    assert stats.total_bytes_downloaded == 150
    assert stats.uploads == 1
    assert stats.total_bytes_uploaded == 7


def test_active_transfers_never_negative():
    monitor = TransferMonitor()
    monitor.transfer_started()
    monitor.transfer_finished()
    monitor.transfer_finished()
    assert monitor.get_stats().active_transfers == 0


def test_get_stats_returns_a_snapshot():
    monitor = TransferMonitor()
    snapshot = monitor.get_stats()
    monitor.record_upload(10)
    assert snapshot.uploads == 0
    assert monitor.get_stats().uploads == 1


def test_reset_and_to_dict():
    monitor = TransferMonitor()
    monitor.record_download(3)
    monitor.transfer_started()
    assert monitor.get_stats().to_dict() == {
        'downloads': 1,
        'uploads': 0,
        'totalBytesDownloaded': 3,
        'totalBytesUploaded': 0,
        'activeTransfers': 1,
    }
    monitor.reset()
    assert monitor.get_stats().to_dict()['downloads'] == 0
