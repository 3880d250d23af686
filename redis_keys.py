MEETING_META_KEY = "meeting:meta:{meeting_id}" # meeting id - meeting document hash
MEETING_PARTICIPANTS_KEY = "meeting:participants:{meeting_id}" # meeting id - hash of user id -> participant json

# **Example `meeting:meta:{id}` hash fields** (every value json encoded)
# - `meeting_id` = `{meetingId}` (uppercase)
# - `host_id` = user id of the creator
# - `created_at` / `expires_at` = ISO timestamps
# - `max_participants` = integer
# - `require_password` / `password`
# - `is_active` = bool
# - `settings` = {"allow_chat": .., "allow_screen_share": .., "mute_on_join": ..}
