"""
Table and index definitions for the card platform.

The DDL always describes the *current* shape of every table. Old snapshot
files are brought up to that shape by ``cardstore.migrations``; a fresh file
gets it directly from here.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from cardstore.db import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaGroup:
    """Tables and indexes for one domain area."""

    name: str
    tables: str
    indexes: str = ""


# Formatted with the table name so the ownership rebuild can create the same
# shape under a temporary name.
THEMES_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  profile_id INTEGER,
  name TEXT NOT NULL,
  category TEXT DEFAULT 'custom',
  colors TEXT NOT NULL,
  typography TEXT,
  layout TEXT,
  avatar TEXT,
  wallpaper TEXT,
  header_background TEXT,
  is_system INTEGER DEFAULT 0,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
  updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
  FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);
"""

ANALYTICS_SUMMARY_TABLE = """
CREATE TABLE IF NOT EXISTS analytics_summary (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  profile_id INTEGER NOT NULL,
  date TEXT NOT NULL,
  total_views INTEGER DEFAULT 0,
  unique_visitors INTEGER DEFAULT 0,
  vcard_downloads INTEGER DEFAULT 0,
  share_count INTEGER DEFAULT 0,
  top_referrers TEXT,
  device_breakdown TEXT,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
  UNIQUE(profile_id, date),
  FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);
"""

ACCOUNTS = SchemaGroup(
    name="accounts",
    tables="""
    CREATE TABLE IF NOT EXISTS users (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      username TEXT UNIQUE NOT NULL,
      email TEXT UNIQUE,
      password_hash TEXT,
      role TEXT DEFAULT 'user',
      google_id TEXT,
      email_verified INTEGER DEFAULT 0,
      gemini_api_key TEXT,
      invites_used INTEGER DEFAULT 0,
      subscription_status TEXT DEFAULT 'free',
      subscription_end_date DATETIME,
      stripe_customer_id TEXT,
      stripe_subscription_id TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS refresh_tokens (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER NOT NULL,
      token_hash TEXT UNIQUE NOT NULL,
      device_info TEXT,
      ip_address TEXT,
      expires_at DATETIME NOT NULL,
      revoked INTEGER DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS user_preferences (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER UNIQUE NOT NULL,
      general_settings TEXT DEFAULT '{}',
      appearance_settings TEXT DEFAULT '{}',
      notification_settings TEXT DEFAULT '{}',
      privacy_settings TEXT DEFAULT '{}',
      music_settings TEXT DEFAULT '{}',
      ai_settings TEXT DEFAULT '{}',
      updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS user_privacy_settings (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER UNIQUE NOT NULL,
      profile_indexing INTEGER DEFAULT 1,
      analytics_enabled INTEGER DEFAULT 1,
      show_online_status INTEGER DEFAULT 1,
      updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS security_activity_log (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER NOT NULL,
      event_type TEXT NOT NULL,
      event_description TEXT,
      ip_hash TEXT,
      device_info TEXT,
      metadata TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS data_export_requests (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER NOT NULL,
      status TEXT DEFAULT 'pending',
      file_format TEXT DEFAULT 'json',
      file_path TEXT,
      expires_at DATETIME,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    indexes="""
    CREATE UNIQUE INDEX IF NOT EXISTS idx_users_google_id ON users(google_id);
    CREATE INDEX IF NOT EXISTS idx_users_subscription ON users(subscription_status, subscription_end_date);
    CREATE INDEX IF NOT EXISTS idx_refresh_tokens_user ON refresh_tokens(user_id);
    CREATE INDEX IF NOT EXISTS idx_security_log_user ON security_activity_log(user_id, created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_export_requests_user ON data_export_requests(user_id);
    """,
)

PROFILES = SchemaGroup(
    name="profiles",
    tables="""
    CREATE TABLE IF NOT EXISTS profiles (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER NOT NULL UNIQUE,
      username TEXT UNIQUE NOT NULL,
      display_name TEXT NOT NULL,
      first_name TEXT,
      last_name TEXT,
      avatar_url TEXT,
      logo_url TEXT,
      background_image_url TEXT,
      headline TEXT,
      company TEXT,
      bio TEXT,
      public_email TEXT,
      public_phone TEXT,
      website TEXT,
      company_email TEXT,
      company_phone TEXT,
      show_email INTEGER DEFAULT 1,
      show_phone INTEGER DEFAULT 1,
      show_website INTEGER DEFAULT 1,
      show_company_email INTEGER DEFAULT 1,
      show_company_phone INTEGER DEFAULT 1,
      address_line1 TEXT,
      address_line2 TEXT,
      address_city TEXT,
      address_state TEXT,
      address_postal_code TEXT,
      address_country TEXT,
      show_address INTEGER DEFAULT 1,
      company_address_line1 TEXT,
      company_address_line2 TEXT,
      company_address_city TEXT,
      company_address_state TEXT,
      company_address_postal_code TEXT,
      company_address_country TEXT,
      show_company_address INTEGER DEFAULT 1,
      active_theme_id INTEGER,
      profile_tags TEXT,
      is_featured INTEGER DEFAULT 0,
      published INTEGER DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
      FOREIGN KEY (active_theme_id) REFERENCES themes(id) ON DELETE SET NULL
    );

    CREATE TABLE IF NOT EXISTS profile_appearance (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER UNIQUE NOT NULL,
      appearance_settings TEXT NOT NULL DEFAULT '{}',
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS social_profiles (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      platform_name TEXT NOT NULL,
      platform_url TEXT NOT NULL,
      logo_url TEXT,
      is_featured INTEGER DEFAULT 0,
      display_order INTEGER DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS qr_codes (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      cache_key TEXT UNIQUE NOT NULL,
      qr_data TEXT NOT NULL,
      format TEXT DEFAULT 'png',
      expires_at DATETIME,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_profiles_username ON profiles(username);
    CREATE INDEX IF NOT EXISTS idx_profiles_published ON profiles(published);
    CREATE INDEX IF NOT EXISTS idx_social_profiles_profile ON social_profiles(profile_id, display_order);
    CREATE INDEX IF NOT EXISTS idx_qr_codes_profile ON qr_codes(profile_id);
    """,
)

LINKS = SchemaGroup(
    name="links",
    tables="""
    CREATE TABLE IF NOT EXISTS link_items (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      type TEXT NOT NULL CHECK(type IN ('CLASSIC', 'GALLERY', 'VIDEO_EMBED', 'HEADER', 'BOOKING', 'VIDEO_UPLOAD', 'CONTACT_FORM', 'MAP_LOCATION', 'FILE_DOWNLOAD')),
      title TEXT NOT NULL,
      url TEXT,
      thumbnail TEXT,
      is_active INTEGER DEFAULT 1,
      clicks INTEGER DEFAULT 0,
      platform TEXT,
      layout TEXT CHECK(layout IS NULL OR layout IN ('grid', 'carousel', 'list')),
      metadata TEXT,
      display_order INTEGER NOT NULL,
      schedule_enabled INTEGER DEFAULT 0,
      schedule_start_time TEXT,
      schedule_end_time TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS gallery_images (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      link_item_id INTEGER NOT NULL,
      url TEXT NOT NULL,
      caption TEXT,
      display_order INTEGER NOT NULL,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (link_item_id) REFERENCES link_items(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS custom_links (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      title TEXT NOT NULL,
      url TEXT NOT NULL,
      icon TEXT,
      display_order INTEGER DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS file_uploads (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      link_id INTEGER NOT NULL,
      profile_id INTEGER NOT NULL,
      file_name TEXT NOT NULL,
      file_url TEXT NOT NULL,
      file_size INTEGER,
      mime_type TEXT,
      password_hash TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (link_id) REFERENCES link_items(id) ON DELETE CASCADE,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_link_items_profile ON link_items(profile_id, display_order);
    CREATE INDEX IF NOT EXISTS idx_gallery_images_link ON gallery_images(link_item_id, display_order);
    CREATE INDEX IF NOT EXISTS idx_custom_links_profile ON custom_links(profile_id);
    CREATE INDEX IF NOT EXISTS idx_file_uploads_link ON file_uploads(link_id);
    """,
)

THEMES = SchemaGroup(
    name="themes",
    tables=THEMES_TABLE.format(name="themes")
    + """
    CREATE TABLE IF NOT EXISTS fonts (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      family TEXT UNIQUE NOT NULL,
      category TEXT,
      weights TEXT,
      source TEXT DEFAULT 'google',
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_themes_profile ON themes(profile_id);
    CREATE INDEX IF NOT EXISTS idx_themes_system ON themes(is_system, category);
    """,
)

ANALYTICS = SchemaGroup(
    name="analytics",
    tables="""
    CREATE TABLE IF NOT EXISTS profile_views (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      viewer_ip_hash TEXT,
      referrer TEXT,
      device_type TEXT,
      viewed_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS vcard_downloads (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      ip_hash TEXT,
      device_type TEXT,
      downloaded_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS share_events (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      share_method TEXT NOT NULL,
      platform TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );
    """
    + ANALYTICS_SUMMARY_TABLE
    + """
    CREATE TABLE IF NOT EXISTS map_location_views (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      link_id INTEGER NOT NULL,
      profile_id INTEGER NOT NULL,
      ip_hash TEXT,
      device_type TEXT,
      viewed_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (link_id) REFERENCES link_items(id) ON DELETE CASCADE,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS file_downloads (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      link_id INTEGER NOT NULL,
      profile_id INTEGER NOT NULL,
      ip_hash TEXT,
      user_agent TEXT,
      downloaded_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (link_id) REFERENCES link_items(id) ON DELETE CASCADE,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS qr_code_scans (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      source TEXT,
      ip_hash TEXT,
      scanned_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS visitors (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      count INTEGER DEFAULT 0,
      last_updated DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_profile_views_profile ON profile_views(profile_id, viewed_at);
    CREATE INDEX IF NOT EXISTS idx_vcard_downloads_profile ON vcard_downloads(profile_id, downloaded_at);
    CREATE INDEX IF NOT EXISTS idx_share_events_profile ON share_events(profile_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_analytics_summary_profile ON analytics_summary(profile_id, date DESC);
    CREATE INDEX IF NOT EXISTS idx_map_location_views_link ON map_location_views(link_id);
    CREATE INDEX IF NOT EXISTS idx_file_downloads_link ON file_downloads(link_id);
    """,
)

BILLING = SchemaGroup(
    name="billing",
    tables="""
    CREATE TABLE IF NOT EXISTS pricing_plans (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      service_type TEXT NOT NULL,
      name TEXT NOT NULL,
      price_inr INTEGER NOT NULL,
      price_display TEXT,
      billing_cycle TEXT DEFAULT 'yearly',
      features TEXT,
      is_featured INTEGER DEFAULT 0,
      sort_order INTEGER DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS payment_transactions (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER NOT NULL,
      order_id TEXT UNIQUE NOT NULL,
      provider TEXT NOT NULL,
      amount_paise INTEGER NOT NULL,
      currency TEXT DEFAULT 'INR',
      payment_status TEXT DEFAULT 'pending',
      plan TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_pricing_plans_service ON pricing_plans(service_type, sort_order);
    CREATE INDEX IF NOT EXISTS idx_payment_transactions_user ON payment_transactions(user_id);
    """,
)

SUPPORT = SchemaGroup(
    name="support",
    tables="""
    CREATE TABLE IF NOT EXISTS contact_tickets (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      email TEXT,
      phone TEXT,
      device_type TEXT,
      symptoms TEXT,
      is_emergency INTEGER DEFAULT 0,
      status TEXT DEFAULT 'open',
      ip_address TEXT,
      user_agent TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS contact_form_submissions (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      profile_id INTEGER NOT NULL,
      link_id INTEGER,
      name TEXT,
      email TEXT,
      phone TEXT,
      subject TEXT,
      message TEXT,
      data TEXT,
      ip_hash TEXT,
      user_agent TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE,
      FOREIGN KEY (link_id) REFERENCES link_items(id) ON DELETE SET NULL
    );

    CREATE TABLE IF NOT EXISTS agentic_ai_inquiries (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      email TEXT NOT NULL,
      phone TEXT,
      company TEXT,
      company_size TEXT,
      service_type TEXT,
      project_description TEXT,
      budget TEXT,
      timeline TEXT,
      priority TEXT DEFAULT 'normal',
      status TEXT DEFAULT 'new',
      ip_address TEXT,
      user_agent TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS general_inquiries (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      email TEXT NOT NULL,
      subject TEXT,
      message TEXT NOT NULL,
      status TEXT DEFAULT 'new',
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS testimonials (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      author_name TEXT NOT NULL,
      author_role TEXT,
      author_company TEXT,
      rating INTEGER CHECK(rating BETWEEN 1 AND 5),
      content TEXT NOT NULL,
      service_type TEXT,
      verified INTEGER DEFAULT 0,
      featured INTEGER DEFAULT 0,
      approved INTEGER DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_contact_tickets_status ON contact_tickets(status, created_at);
    CREATE INDEX IF NOT EXISTS idx_contact_submissions_profile ON contact_form_submissions(profile_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_testimonials_featured ON testimonials(featured, approved);
    """,
)

TEMPLATES = SchemaGroup(
    name="templates",
    tables="""
    CREATE TABLE IF NOT EXISTS vcard_templates (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      description TEXT,
      category TEXT,
      thumbnail TEXT,
      theme_config TEXT NOT NULL DEFAULT '{}',
      blocks_config TEXT NOT NULL DEFAULT '[]',
      social_profiles_config TEXT DEFAULT '[]',
      tags TEXT,
      is_system INTEGER DEFAULT 0,
      is_public INTEGER DEFAULT 0,
      is_ai_generated INTEGER DEFAULT 0,
      popularity INTEGER DEFAULT 0,
      created_by INTEGER,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL
    );

    CREATE TABLE IF NOT EXISTS template_usage (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      template_id INTEGER NOT NULL,
      profile_id INTEGER NOT NULL,
      apply_mode TEXT DEFAULT 'replace',
      applied_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (template_id) REFERENCES vcard_templates(id) ON DELETE CASCADE,
      FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_vcard_templates_category ON vcard_templates(category, is_public);
    CREATE INDEX IF NOT EXISTS idx_template_usage_template ON template_usage(template_id);
    """,
)

MEDIA = SchemaGroup(
    name="media",
    tables="""
    CREATE TABLE IF NOT EXISTS songs (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      title TEXT NOT NULL,
      artist TEXT,
      album TEXT,
      file_path TEXT UNIQUE NOT NULL,
      cover_path TEXT,
      duration INTEGER,
      genre TEXT,
      play_count INTEGER DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS playlists (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER NOT NULL,
      name TEXT NOT NULL,
      description TEXT,
      is_public BOOLEAN DEFAULT 0,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS playlist_songs (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      playlist_id INTEGER NOT NULL,
      song_id INTEGER NOT NULL,
      position INTEGER NOT NULL,
      added_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      FOREIGN KEY (playlist_id) REFERENCES playlists(id) ON DELETE CASCADE,
      FOREIGN KEY (song_id) REFERENCES songs(id) ON DELETE CASCADE,
      UNIQUE(playlist_id, song_id)
    );

    CREATE TABLE IF NOT EXISTS user_likes (
      user_id INTEGER NOT NULL,
      song_id INTEGER NOT NULL,
      liked_at DATETIME DEFAULT CURRENT_TIMESTAMP,
      PRIMARY KEY (user_id, song_id),
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
      FOREIGN KEY (song_id) REFERENCES songs(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS camera_updates (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      brand TEXT NOT NULL,
      title TEXT NOT NULL,
      type TEXT,
      category TEXT,
      version TEXT,
      description TEXT,
      features TEXT,
      image_url TEXT,
      download_link TEXT,
      source_name TEXT,
      source_url TEXT,
      priority INTEGER DEFAULT 0,
      date TEXT,
      created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """,
    indexes="""
    CREATE INDEX IF NOT EXISTS idx_songs_album ON songs(album);
    CREATE INDEX IF NOT EXISTS idx_songs_artist ON songs(artist);
    CREATE INDEX IF NOT EXISTS idx_songs_title ON songs(title);
    CREATE INDEX IF NOT EXISTS idx_play_count ON songs(play_count DESC);
    CREATE INDEX IF NOT EXISTS idx_playlists_user ON playlists(user_id);
    CREATE INDEX IF NOT EXISTS idx_playlist_songs_playlist ON playlist_songs(playlist_id);
    CREATE INDEX IF NOT EXISTS idx_camera_updates_brand ON camera_updates(brand, date DESC);
    """,
)

BOOKKEEPING = SchemaGroup(
    name="bookkeeping",
    tables="""
    CREATE TABLE IF NOT EXISTS migration_tracker (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      migration_name TEXT UNIQUE NOT NULL,
      checksum TEXT NOT NULL,
      applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """,
)

SCHEMA_GROUPS: tuple[SchemaGroup, ...] = (
    ACCOUNTS,
    PROFILES,
    LINKS,
    THEMES,
    ANALYTICS,
    BILLING,
    SUPPORT,
    TEMPLATES,
    MEDIA,
    BOOKKEEPING,
)

# Tables a healthy database must always carry.
KEY_TABLES = ("users", "profiles", "link_items", "themes", "visitors", "refresh_tokens")


def split_statements(script: str) -> Iterator[str]:
    """Yield each complete SQL statement of ``script``, comments included."""
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip()
            buffer = ""
            if statement:
                yield statement
    tail = buffer.strip()
    if tail and not _only_comments(tail):
        yield tail


def _only_comments(fragment: str) -> bool:
    return all(
        not line.strip() or line.strip().startswith("--")
        for line in fragment.splitlines()
    )


def group_tables(group: SchemaGroup) -> list[str]:
    """Names of the tables a group creates, in definition order."""
    names = []
    for statement in split_statements(group.tables):
        head = statement.split("(", 1)[0].split()
        if len(head) >= 6 and head[:2] == ["CREATE", "TABLE"]:
            names.append(head[5])
    return names


def expected_tables() -> list[str]:
    return [name for group in SCHEMA_GROUPS for name in group_tables(group)]


def apply_schema(store: "Store") -> list[str]:
    """
    Create every table that does not exist yet.

    Each group runs in its own transaction. A failing group is logged and
    rolled back; the remaining groups are still attempted. Returns the names
    of the groups that failed.
    """
    failed = []
    for group in SCHEMA_GROUPS:
        try:
            with store.transaction() as conn:
                for statement in split_statements(group.tables):
                    conn.exec_driver_sql(statement)
        except Exception:
            logger.exception("Failed to create tables for %s", group.name)
            failed.append(group.name)
    return failed


def apply_indexes(store: "Store") -> list[str]:
    """Create missing indexes one statement at a time. Returns failed statements."""
    failed = []
    for group in SCHEMA_GROUPS:
        for statement in split_statements(group.indexes):
            try:
                with store.transaction() as conn:
                    conn.exec_driver_sql(statement)
            except Exception as exc:
                logger.error("Failed to create index for %s: %s", group.name, exc)
                failed.append(statement)
    return failed
