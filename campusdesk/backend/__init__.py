from campusdesk.backend.clients import ApiError, BackendClient
from campusdesk.backend.supabase import SupabaseClient, SupabaseError

__all__ = ['ApiError', 'BackendClient', 'SupabaseClient', 'SupabaseError']
