"""
Backup and disaster recovery app for the studio billing platform.

Backs up the database and uploaded files as a single archive to any number
of cloud destinations (S3-compatible storage, Backblaze B2, Google Drive),
on demand or on a daily or weekly schedule, and restores a fresh install
from one of those archives during initial setup.
"""
