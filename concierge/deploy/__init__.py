"""Deployment pipeline: tag, sync, build and apply a Nix configuration.

This package provides:
- Content tagging: force re-evaluation of files, with timestamped backups
- Process running: external commands with inherited output streams
- Sync: rsync between the config dir and the install dir
- Platform dispatch: the OS-specific build-and-apply command
- Orchestration: the ordered, fail-fast deployment sequence
- Config repo reconciliation: the git policy wrapped around a deployment
"""
