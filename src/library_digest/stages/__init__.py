"""Pipeline stages.

Coordinating flow: listing -> fetch -> route, then per-lane workers.

Stages:
    listing  -- Streams RemoteEntry values from the remote source (recursive
                by default) and filters them with PathFilter: ordered regex
                exclusions on the file name (archives, .DS_Store and ._ OS
                markers, .part/.filepart/.tmp in-progress transfers).
                Directories are walked, never admitted. The report
                identifier path segment is kept in display paths.
    fetch    -- Downloads an admitted entry under local_dir, mirroring the
                remote tree with sanitized segments (spaces -> dashes).
                Append-or-skip: an existing local file is reused. Writes
                to a .part sibling and renames when complete. Preserves the
                remote mtime when timestamps are preserved.
    route    -- classify() by extension (images vs. everything else) and
                Router.route() into exactly one lane; unrecognized content
                goes to the document lane.
    document -- Lane worker: extract text (pypdf / python-docx / plain
                text), skip blank documents, summarize through the
                document model.
    image    -- Lane worker: base64-encode the image and POST it with a
                path-derived prompt to the vision model's /api/chat.
"""
