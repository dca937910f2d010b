"""
Tenant model — one row per GP surgery.

Besides identity, a surgery carries its clinical-review sign-off state:
  - requires_clinical_review: True while any item in the surgery's view is
    still pending review (recomputed by review_service after every review
    mutation).
  - last_clinical_review_at / last_clinical_reviewer_id: stamped when an
    admin completes sign-off; kept as history when a re-review is requested.
"""

from datetime import datetime, timezone

from signposting.models import db


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    requires_clinical_review = db.Column(db.Boolean, default=True, nullable=False)
    last_clinical_review_at = db.Column(db.DateTime)
    last_clinical_reviewer_id = db.Column(db.String(64))

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "requires_clinical_review": self.requires_clinical_review,
            "last_clinical_review_at": (
                self.last_clinical_review_at.isoformat() if self.last_clinical_review_at else None
            ),
            "last_clinical_reviewer_id": self.last_clinical_reviewer_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
