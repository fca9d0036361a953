
class TransferStats:
	def __init__(self, downloads = 0, uploads = 0, total_bytes_downloaded = 0, total_bytes_uploaded = 0, active_transfers = 0):
		self.downloads = downloads
		self.uploads = uploads
		self.total_bytes_downloaded = total_bytes_downloaded
		self.total_bytes_uploaded = total_bytes_uploaded
		self.active_transfers = active_transfers

	def to_dict(self):
		return {
			'downloads' : self.downloads,
			'uploads' : self.uploads,
			'totalBytesDownloaded' : self.total_bytes_downloaded,
			'totalBytesUploaded' : self.total_bytes_uploaded,
			'activeTransfers' : self.active_transfers,
		}

	def __str__(self):
		return 'downloads=%s uploads=%s down=%sB up=%sB active=%s' % (
			self.downloads, self.uploads, self.total_bytes_downloaded, 
			self.total_bytes_uploaded, self.active_transfers
		)

class TransferMonitor:
	"""Transfer counters of one server instance. Observability only."""
	def __init__(self):
		self.stats = TransferStats()

	def record_download(self, nbytes:int):
		self.stats.downloads += 1
		self.stats.total_bytes_downloaded += nbytes

	def record_upload(self, nbytes:int):
		self.stats.uploads += 1
		self.stats.total_bytes_uploaded += nbytes

	def transfer_started(self):
		self.stats.active_transfers += 1

	def transfer_finished(self):
		self.stats.active_transfers = max(0, self.stats.active_transfers - 1)

	def get_stats(self) -> TransferStats:
		s = self.stats
		return TransferStats(s.downloads, s.uploads, s.total_bytes_downloaded, s.total_bytes_uploaded, s.active_transfers)

	def reset(self):
		self.stats = TransferStats()
