"""ContactSubmission: one validated contact form submission.

Transient value object: built from the request after all gates passed,
handed to the mail dispatcher, then discarded. Never persisted.
"""

import math

# Subject keywords that switch the confirmation mail to a casual tone.
CASUAL_SUBJECT_KEYWORDS = ("student", "praktikum", "bewerbung", "karriere")

MAX_RATING = 5


class ContactSubmission:
    """Cleaned contact form fields plus request metadata."""

    def __init__(self, name, email, subject, message, kuerzel="", rating=None,
                 crm_consent=False, phone="", mobilephone="", client_ip=None,
                 lang="de"):
        self.name = name
        self.email = email
        self.subject = subject
        self.message = message
        self.kuerzel = kuerzel
        self.rating = rating
        self.crm_consent = crm_consent
        self.phone = phone
        self.mobilephone = mobilephone
        self.client_ip = client_ip
        self.lang = lang

    @property
    def is_student_related(self):
        """True if the subject suggests a student/career inquiry."""
        subject = (self.subject or "").lower()
        return any(keyword in subject for keyword in CASUAL_SUBJECT_KEYWORDS)

    @property
    def has_rating(self):
        return bool(self.rating)

    def rating_stars(self, full, half, empty):
        """Render the rating as ``full`` x N, optional ``half``, ``empty`` to 5."""
        if self.rating is None:
            return ""
        full_count = int(math.floor(self.rating))
        has_half = (self.rating - full_count) >= 0.5
        empty_count = MAX_RATING - full_count - (1 if has_half else 0)
        return full * full_count + (half if has_half else "") + empty * empty_count

    def __repr__(self):
        return f"<ContactSubmission subject={self.subject!r} consent={self.crm_consent}>"
