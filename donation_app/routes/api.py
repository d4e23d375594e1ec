# donation_app/routes/api.py

"""
JSON API routes for administrative donor operations.
"""

from flask import current_app, jsonify, request

from donation_app.importer.exceptions import DonorMergeError, DonorNotFoundError
from donation_app.importer.pipeline import DonorMergeService


def _serialize_donor(donor):
    return {
        "id": donor.id,
        "name": donor.name,
        "email": donor.email,
        "phone": donor.phone,
        "address_line1": donor.address_line1,
        "address_line2": donor.address_line2,
        "city": donor.city,
        "state": donor.state,
        "zip_code": donor.zip_code,
        "country": donor.country,
    }


def register_api_routes(app):
    """Register API routes"""

    @app.route("/api/donors/merge", methods=["POST"])
    def api_merge_donors():
        """
        Merge duplicate donors.

        Body: ``{"donor_ids": [1, 2], "field_selections": {"name": 1, "email": 2}}``.
        Invalid arguments return 400, unknown donors 404.
        """
        payload = request.get_json(silent=True) or {}
        donor_ids = payload.get("donor_ids")
        field_selections = payload.get("field_selections")
        if not isinstance(donor_ids, list) or not isinstance(field_selections, dict):
            return jsonify({"error": "donor_ids (list) and field_selections (object) are required"}), 400

        try:
            result = DonorMergeService().merge(donor_ids, field_selections)
        except DonorMergeError as exc:
            current_app.logger.info("Donor merge rejected: %s", exc)
            return jsonify({"error": str(exc)}), 400
        except DonorNotFoundError as exc:
            return jsonify({"error": str(exc), "donor_ids": list(exc.donor_ids)}), 404

        return (
            jsonify(
                {
                    "merged_donor": _serialize_donor(result.merged_donor),
                    "donations_reassigned": result.donations_reassigned,
                    "sponsorships_reassigned": result.sponsorships_reassigned,
                }
            ),
            200,
        )
