"""amibackup - cross-region EC2 AMI backups with windowed retention."""

__version__ = "0.6.0"
