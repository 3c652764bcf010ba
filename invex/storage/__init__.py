from invex.storage.filesystem_storage import FileSystemStorage, TempStorage

__all__ = ['FileSystemStorage', 'TempStorage']
