"""FTP protocol module for ftptree.

This module implements the client side of FTP over raw sockets:
- codec: Command encoding, reply assembly and listing parsing
- transport: Socket and TLS factory
- FTPSession: Control connection with state tracking
- DataTransferManager: Passive/active data channels for transfers
- DirectoryTree: Recursive listing, deletion and tree transfers
- FtpClient: Public facade over the above
- Exceptions: FTP-specific error types
"""
